"""
Script para aplicar as migrations do gate de compliance.

Uso:
    python migrations/compliance/apply.py

Requer: SUPABASE_URL e SUPABASE_SERVICE_KEY no ambiente (ou .env)
e a função exec_sql disponível no projeto Supabase.
"""
import sys
from pathlib import Path

from supabase import create_client

from app.core.config import settings

# Diretorio das migrations
MIGRATIONS_DIR = Path(__file__).parent

# Ordem das migrations
MIGRATIONS = [
    "001_compliance_gate.sql",
]


def apply_migrations(client) -> list[str]:
    """
    Aplica todas as migrations em ordem.

    Returns:
        Migrations que falharam
    """
    falhas = []
    for migration_file in MIGRATIONS:
        path = MIGRATIONS_DIR / migration_file
        if not path.exists():
            print(f"[SKIP] {migration_file} nao encontrado")
            continue

        print(f"[APPLY] {migration_file}...")

        try:
            # Executar via RPC (raw SQL)
            client.rpc("exec_sql", {"sql": path.read_text()}).execute()
            print(f"[OK] {migration_file}")
        except Exception as e:
            print(f"[ERROR] {migration_file}: {e}")
            falhas.append(migration_file)

    return falhas


if __name__ == "__main__":
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        print("Erro: SUPABASE_URL e SUPABASE_SERVICE_KEY necessarios")
        sys.exit(1)

    print("=== Compliance Gate Migrations ===")
    print(f"URL: {settings.SUPABASE_URL}")
    print()

    falhas = apply_migrations(create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY))

    if falhas:
        print()
        print("Execute os SQLs manualmente no Supabase SQL Editor:")
        for m in falhas:
            print(f"  - migrations/compliance/{m}")
        sys.exit(1)
