"""
Alertas do gate no Slack (webhook).

Só eventos que pedem ação humana: lockdown ativado e mudança do
emergency stop. Sempre disparados via safe_create_task.
"""
import logging
import time
from typing import Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

VERMELHO = "#F44336"
VERMELHO_ESCURO = "#B71C1C"
VERDE = "#4CAF50"


def _campo(titulo: str, valor, curto: bool = True) -> dict:
    return {"title": titulo, "value": str(valor), "short": curto}


def _mensagem(texto: str, cor: str, campos: list[dict], titulo: Optional[str] = None) -> dict:
    anexo = {
        "color": cor,
        "fields": campos,
        "footer": settings.APP_NAME,
        "ts": int(time.time()),
    }
    if titulo:
        anexo["title"] = titulo
    return {"text": texto, "attachments": [anexo]}


async def enviar_slack(mensagem: dict) -> bool:
    """
    POST no webhook configurado.

    Returns:
        False quando não há webhook ou o Slack não aceitou
    """
    webhook = settings.SLACK_WEBHOOK_URL
    if not webhook:
        logger.debug("[slack] SLACK_WEBHOOK_URL vazio, alerta descartado")
        return False

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(webhook, json=mensagem, timeout=10.0)
    except httpx.HTTPError as e:
        logger.error(f"[slack] Webhook inacessível: {e}")
        return False

    if response.status_code != 200:
        logger.error(f"[slack] Webhook respondeu {response.status_code}")
        return False
    return True


async def notificar_lockdown(lockdown: dict, regra: Optional[str] = None) -> bool:
    """Lockdown ativado; regra vem preenchida quando foi o monitor que disparou."""
    agente = lockdown.get("agent_type") or "?"
    campos = [
        _campo("Agente", agente),
        _campo("Valor", lockdown.get("triggered_value", "-")),
        _campo("Motivo", lockdown.get("reason", ""), curto=False),
    ]
    if regra:
        campos.insert(0, _campo("Regra", regra))

    return await enviar_slack(
        _mensagem(f"🔒 Lockdown ativado: {agente}", VERMELHO, campos, titulo="Security lockdown")
    )


async def notificar_emergency_stop(ativo: bool, motivo: str, usuario: str) -> bool:
    if ativo:
        texto, cor = "🛑 EMERGENCY STOP ATIVADO - todo outbound bloqueado", VERMELHO_ESCURO
    else:
        texto, cor = "✅ Emergency stop desativado - outbound liberado", VERDE

    campos = [_campo("Por", usuario), _campo("Motivo", motivo or "-", curto=False)]
    return await enviar_slack(_mensagem(texto, cor, campos))
