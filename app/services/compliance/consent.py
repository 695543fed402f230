"""
Ledger de consentimento e supressão.

Responde duas perguntas:
- O contato está suprimido para este canal (ou "all")?
- O contato tem consentimento válido (não revogado) para este canal?

Ambas são FAIL-SAFE: qualquer erro de leitura (inclusive timeout)
resulta em negar o contato. Nunca fail-open.
"""
import asyncio
import logging
import re
from typing import Optional, Tuple

from app.core.exceptions import SafetyCheckError
from app.core.timezone import iso_utc
from app.services.supabase import supabase, executar_com_timeout

from .types import SCOPE_ALL, Channel, ConsentType, require_id, parse_channel

logger = logging.getLogger(__name__)

TABLE_SUPPRESSION = "contact_suppression"
TABLE_CONSENT = "contact_consent"
TABLE_CONTACTS = "contacts"

# Palavras-chave de SMS (respostas de uma palavra só)
KEYWORDS_OPTOUT = {"stop", "stopall", "unsubscribe", "cancel", "end", "quit"}
KEYWORDS_OPTIN = {"start", "unstop", "yes"}


async def _ler_existe(query, descricao: str) -> bool:
    """
    Executa query de existência (limit 1).

    Raises:
        SafetyCheckError: Em qualquer falha, inclusive timeout/cancelamento
    """
    try:
        response = await executar_com_timeout(query.execute)
    except (Exception, asyncio.CancelledError) as e:
        raise SafetyCheckError(f"Falha na leitura de {descricao}", original_error=e)
    return len(response.data or []) > 0


async def is_contact_suppressed(contact_id: str, channel: Channel) -> bool:
    """
    Verifica se contato está suprimido para o canal.

    Supressão com channel="all" cobre todos os canais.
    Só conta supressão ativa (reactivated_at nulo).

    Returns:
        True se suprimido OU se a leitura falhou (fail-safe)
    """
    channel = parse_channel(channel)
    query = (
        supabase.table(TABLE_SUPPRESSION)
        .select("id")
        .eq("contact_id", contact_id)
        .in_("channel", [channel.value, SCOPE_ALL])
        .is_("reactivated_at", "null")
        .limit(1)
    )

    try:
        return await _ler_existe(query, "supressão")
    except SafetyCheckError as e:
        logger.error(
            f"[compliance] Erro na verificação de supressão, tratando como suprimido: {e.original_error}",
            extra={"contact_id": contact_id, "channel": channel.value},
        )
        return True


async def has_valid_consent(
    contact_id: str,
    channel: Channel,
    consent_type: Optional[ConsentType] = None,
) -> bool:
    """
    Verifica se contato tem consentimento válido para o canal.

    Qualquer registro não revogado serve. Registro revogado nunca vale,
    independente de concessões anteriores.

    Returns:
        True se existe consentimento válido; False se não existe
        OU se a leitura falhou (fail-safe)
    """
    channel = parse_channel(channel)
    query = (
        supabase.table(TABLE_CONSENT)
        .select("id")
        .eq("contact_id", contact_id)
        .eq("channel", channel.value)
        .is_("revoked_at", "null")
        .limit(1)
    )
    if consent_type:
        query = query.eq("consent_type", ConsentType(consent_type).value)

    try:
        return await _ler_existe(query, "consentimento")
    except SafetyCheckError as e:
        logger.error(
            f"[compliance] Erro na verificação de consentimento, tratando como sem consentimento: {e.original_error}",
            extra={"contact_id": contact_id, "channel": channel.value},
        )
        return False


async def is_do_not_contact(contact_id: str) -> bool:
    """
    Verifica flag do_not_contact do contato.

    Returns:
        True se marcado OU se a leitura falhou (fail-safe)
    """
    query = (
        supabase.table(TABLE_CONTACTS)
        .select("id")
        .eq("id", contact_id)
        .eq("do_not_contact", True)
        .limit(1)
    )

    try:
        return await _ler_existe(query, "do_not_contact")
    except SafetyCheckError as e:
        logger.error(
            f"[compliance] Erro ao ler do_not_contact, tratando como DNC: {e.original_error}",
            extra={"contact_id": contact_id},
        )
        return True


# =============================================================================
# Gestão de consentimento/supressão
# =============================================================================

async def registrar_consentimento(
    contact_id: str,
    channel: Channel,
    consent_type: ConsentType,
    source: Optional[str] = None,
) -> dict:
    """
    Registra novo consentimento.

    Returns:
        Registro criado

    Raises:
        ValidationError: Se contact_id ausente ou canal inválido
    """
    contact_id = require_id(contact_id, "contact_id")
    channel = parse_channel(channel)

    registro = {
        "contact_id": contact_id,
        "channel": channel.value,
        "consent_type": ConsentType(consent_type).value,
        "granted_at": iso_utc(),
        "source": source,
    }
    response = supabase.table(TABLE_CONSENT).insert(registro).execute()

    logger.info(f"[compliance] Consentimento {consent_type} registrado: {contact_id} via {channel.value}")
    return response.data[0] if response.data else registro


async def revogar_consentimento(contact_id: str, channel: Channel) -> int:
    """
    Revoga todos os consentimentos válidos do contato no canal.

    Returns:
        Quantidade de registros revogados
    """
    contact_id = require_id(contact_id, "contact_id")
    channel = parse_channel(channel)

    response = (
        supabase.table(TABLE_CONSENT)
        .update({"revoked_at": iso_utc()})
        .eq("contact_id", contact_id)
        .eq("channel", channel.value)
        .is_("revoked_at", "null")
        .execute()
    )

    revogados = len(response.data or [])
    logger.info(f"[compliance] {revogados} consentimento(s) revogado(s): {contact_id} via {channel.value}")
    return revogados


async def suprimir_contato(
    contact_id: str,
    channel: str = SCOPE_ALL,
    reason: Optional[str] = None,
    source: Optional[str] = None,
) -> dict:
    """
    Suprime contato em um canal ou em todos ("all").

    Idempotente: se já existe supressão ativa no mesmo escopo,
    retorna a existente.
    """
    contact_id = require_id(contact_id, "contact_id")
    escopo = SCOPE_ALL if channel == SCOPE_ALL else parse_channel(channel).value

    existente = (
        supabase.table(TABLE_SUPPRESSION)
        .select("*")
        .eq("contact_id", contact_id)
        .eq("channel", escopo)
        .is_("reactivated_at", "null")
        .limit(1)
        .execute()
    )
    if existente.data:
        logger.debug(f"[compliance] Supressão já ativa: {contact_id}/{escopo}")
        return existente.data[0]

    registro = {
        "contact_id": contact_id,
        "channel": escopo,
        "reason": (reason or "")[:200] or None,
        "source": source,
    }
    response = supabase.table(TABLE_SUPPRESSION).insert(registro).execute()

    logger.info(f"[compliance] Contato suprimido: {contact_id} escopo={escopo} motivo='{reason}'")
    return response.data[0] if response.data else registro


async def reativar_contato(contact_id: str, channel: str = SCOPE_ALL) -> int:
    """
    Reativa contato (encerra supressões ativas no escopo).

    Returns:
        Quantidade de supressões encerradas
    """
    contact_id = require_id(contact_id, "contact_id")
    escopo = SCOPE_ALL if channel == SCOPE_ALL else parse_channel(channel).value

    response = (
        supabase.table(TABLE_SUPPRESSION)
        .update({"reactivated_at": iso_utc()})
        .eq("contact_id", contact_id)
        .eq("channel", escopo)
        .is_("reactivated_at", "null")
        .execute()
    )

    reativados = len(response.data or [])
    logger.info(f"[compliance] Contato reativado: {contact_id} escopo={escopo} ({reativados})")
    return reativados


def detectar_palavra_chave(texto: str) -> Tuple[Optional[str], str]:
    """
    Detecta palavra-chave de SMS (STOP / START e variações).

    Args:
        texto: Corpo da mensagem recebida

    Returns:
        (acao, palavra) onde acao é "optout", "optin" ou None
    """
    if not texto:
        return None, ""

    palavra = re.sub(r"[^a-z]", "", texto.strip().lower())

    if palavra in KEYWORDS_OPTOUT:
        return "optout", palavra
    if palavra in KEYWORDS_OPTIN:
        return "optin", palavra
    return None, palavra


async def processar_palavra_chave(contact_id: str, texto: str) -> Optional[str]:
    """
    Processa resposta de SMS com palavra-chave.

    - optout: suprime SMS e revoga consentimento de SMS
    - optin: encerra supressão de SMS (consentimento novo é registrado à parte)

    Returns:
        Ação aplicada ou None
    """
    acao, palavra = detectar_palavra_chave(texto)
    if acao is None:
        return None

    if acao == "optout":
        await suprimir_contato(
            contact_id,
            Channel.SMS.value,
            reason=f"SMS keyword {palavra.upper()}",
            source="sms_keyword",
        )
        await revogar_consentimento(contact_id, Channel.SMS)
    else:
        await reativar_contato(contact_id, Channel.SMS.value)

    logger.info(f"[compliance] Palavra-chave '{palavra}' processada para {contact_id}: {acao}")
    return acao
