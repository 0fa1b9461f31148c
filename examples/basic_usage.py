"""Exemplo básico de uso do cliente KeyEnv.

Requer KEYENV_TOKEN no ambiente e um projeto com o ambiente "development".
"""

import asyncio
import logging
import sys

from keyenv import KeyEnvClient, KeyEnvError, NotFoundError, SecretInput

# Configurar logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def audit(event, metadata):
    logger.info(f"[auditoria] {event}: {metadata}")


async def main(project_id: str) -> None:
    """Demonstra uso básico do KeyEnvClient."""

    print("\n=== KeyEnv - Exemplo Básico ===\n")

    # 1. Criar cliente a partir de KEYENV_TOKEN
    print("1. Criando cliente com cache de 5 minutos...")
    async with KeyEnvClient.from_environment(
        cache_ttl=300, logger=logger, audit_callback=audit
    ) as client:
        user = await client.validate_token()
        print(f"   Autenticado como: {user.id} (service token: {user.is_service_token})")

        # 2. Criar ou atualizar segredo
        print("\n2. Gravando segredo (upsert)...")
        created = await client.set_secret(
            project_id, "development", "EXAMPLE_API_KEY", "sk-1234567890", "Chave de exemplo"
        )
        print(f"   ✓ {'Criado' if created else 'Atualizado'}")

        # 3. Ler segredos (a segunda leitura vem do cache)
        print("\n3. Lendo segredos...")
        secrets = await client.get_secrets_as_dict(project_id, "development")
        await client.get_secrets_as_dict(project_id, "development")
        for key in secrets:
            print(f"   - {key}")

        # 4. Importação em lote
        print("\n4. Importando em lote...")
        result = await client.bulk_import(
            project_id,
            "development",
            [SecretInput("EXAMPLE_HOST", "localhost"), SecretInput("EXAMPLE_PORT", "5432")],
        )
        print(f"   criados={result.created} atualizados={result.updated} ignorados={result.skipped}")

        # 5. Gerar conteúdo .env
        print("\n5. Conteúdo .env:")
        print(await client.generate_env_file(project_id, "development"))

        # 6. Remover segredos de exemplo
        print("6. Removendo segredos de exemplo...")
        for key in ("EXAMPLE_API_KEY", "EXAMPLE_HOST", "EXAMPLE_PORT"):
            try:
                await client.delete_secret(project_id, "development", key)
            except NotFoundError:
                print(f"   {key} já não existia")

        # 7. Estatísticas
        print("\n7. Estatísticas de uso:")
        for key, value in client.get_statistics().items():
            print(f"   {key}: {value}")

    print("\n=== Fim do exemplo ===\n")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Uso: python basic_usage.py <project_id>")
        sys.exit(1)
    try:
        asyncio.run(main(sys.argv[1]))
    except KeyEnvError as e:
        logger.error(f"Falha: {e}")
        sys.exit(1)
