"""Exemplo de uso de KeyEnvConfig.from_file() e KeyEnvClient.write_env_file()."""

import asyncio
import sys
from pathlib import Path

from keyenv import KeyEnvClient, KeyEnvConfig, parse_env_text


async def export(config: KeyEnvConfig, project_id: str, environment: str, target: Path) -> None:
    async with KeyEnvClient(config) as client:
        count = await client.write_env_file(project_id, environment, str(target))
    print(f"{count} segredo(s) exportado(s) para: {target}")


def main() -> None:
    """Demonstra persistencia da configuracao e exportacao para .env."""
    if len(sys.argv) != 3:
        print("Uso: python env_file_usage.py <project_id> <environment>")
        sys.exit(1)
    project_id, environment = sys.argv[1], sys.argv[2]

    config_path = Path("keyenv_config.env")
    target = Path(f".env.{environment}")

    # 1) Criar configuracao a partir do ambiente e salvar (com token)
    config = KeyEnvConfig.from_environment(cache_ttl=60)
    config.to_file(str(config_path), include_token=True)
    print(f"Configuracao salva em: {config_path}")

    # 2) Carregar a configuracao do arquivo (class method)
    loaded = KeyEnvConfig.from_file(str(config_path))

    # 3) Exportar os segredos do ambiente
    asyncio.run(export(loaded, project_id, environment, target))

    # 4) Ler de volta o arquivo gerado
    print("\nChaves no arquivo gerado:")
    for key in parse_env_text(target.read_text(encoding="utf-8")):
        print(f"  {key}")

    # Cleanup do arquivo de configuracao (contem o token)
    if config_path.exists():
        config_path.unlink()


if __name__ == "__main__":
    main()
