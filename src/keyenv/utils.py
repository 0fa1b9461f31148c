"""Funções auxiliares: codificação de arquivos .env e lock de arquivos."""

import os
from contextlib import contextmanager
from io import StringIO
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, TextIO, Tuple, Union

from dotenv import dotenv_values

# Caracteres que exigem aspas duplas no valor
QUOTE_TRIGGERS = frozenset(" \t\n\"'\\$")

EnvPairs = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def needs_quoting(value: str) -> bool:
    """Indica se o valor precisa ser escrito entre aspas duplas."""
    return any(ch in QUOTE_TRIGGERS for ch in value)


def escape_env_value(value: str) -> str:
    """Escapa valores para escrita segura em arquivos .env.

    A ordem das substituições é fixa: barra invertida, aspas duplas,
    quebra de linha e cifrão. Escapar a barra invertida primeiro evita
    duplicar as barras introduzidas pelas substituições seguintes.
    Aspas simples não são escapadas.

    Examples:
        >>> escape_env_value('has"quote')
        'has\\\\"quote'
        >>> escape_env_value("$HOME")
        '\\\\$HOME'
    """
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("$", "\\$")
    )


def format_env_line(key: str, value: str) -> str:
    """Formata uma linha ``KEY=VALUE`` terminada em quebra de linha."""
    if needs_quoting(value):
        return f'{key}="{escape_env_value(value)}"\n'
    return f"{key}={value}\n"


def format_env_file(pairs: EnvPairs) -> str:
    """Gera o conteúdo de um arquivo .env compatível com shells POSIX.

    As linhas saem na mesma ordem dos pares recebidos, sem reordenação.

    Args:
        pairs: Mapeamento ou sequência de pares (chave, valor)

    Returns:
        str: Conteúdo do arquivo, uma linha por par
    """
    items = pairs.items() if isinstance(pairs, Mapping) else pairs
    return "".join(format_env_line(key, value) for key, value in items)


def parse_env_stream(stream: TextIO) -> Dict[str, str]:
    """Parseia um stream .env usando python-dotenv.

    O python-dotenv não conhece o escape ``\\$``; a interpolação é
    desligada e o cifrão é restaurado após o parse. Assim o conteúdo
    gerado por ``format_env_file`` volta aos valores originais.
    """
    data = dotenv_values(stream=stream, interpolate=False)
    return {
        key: value.replace("\\$", "$") for key, value in data.items() if value is not None
    }


def parse_env_text(text: str) -> Dict[str, str]:
    """Decodifica o conteúdo gerado por ``format_env_file``.

    Cada par ocupa exatamente uma linha física, então as linhas são
    parseadas uma a uma: um valor terminado em barra invertida não pode
    consumir as linhas seguintes.

    Valores sem aspas são copiados literalmente após o primeiro ``=``. O
    python-dotenv trataria ``\\r`` como quebra de linha e removeria
    espaços verticais do fim do valor (``\\x0b``, ``\\x0c``), caracteres
    que não forçam aspas. Valores entre aspas passam pelo python-dotenv.
    """
    data: Dict[str, str] = {}
    for line in text.split("\n"):
        if not line:
            continue
        key, sep, raw = line.partition("=")
        if sep and key and not line.startswith("#") and not raw.startswith('"'):
            data[key] = raw
        else:
            data.update(parse_env_stream(StringIO(line)))
    return data


def parse_env_file(path: Path) -> Dict[str, str]:
    """Parseia um arquivo .env usando python-dotenv."""
    with path.open("r", encoding="utf-8", errors="strict") as f:
        return parse_env_stream(f)


def _lock_file(file_handle: TextIO) -> None:
    if os.name == "nt":
        import msvcrt

        file_handle.seek(0)
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_LOCK, 1)
        return

    import fcntl

    fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(file_handle: TextIO) -> None:
    if os.name == "nt":
        import msvcrt

        file_handle.seek(0)
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)
        return

    import fcntl

    fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def locked_file(path: Path) -> Iterator[TextIO]:
    """Abre o arquivo e aplica lock exclusivo enquanto estiver em uso."""
    file_handle = path.open("a+", encoding="utf-8", errors="strict")
    _lock_file(file_handle)
    try:
        yield file_handle
    finally:
        _unlock_file(file_handle)
        file_handle.close()
