"""
Utilitaires IO JSON (rapides) basés sur orjson.
- read_json(Path)  → Any | None (None si fichier manquant)
- write_json(Path, data) → écrit en binaire via un fichier temporaire puis `replace`
- read_ndjson / write_ndjson → journaux append-only (une entrée par ligne)

Attention:
- orjson renvoie/attend des bytes; on lit/écrit en mode binaire.
"""
import orjson as json
import os
from pathlib import Path
from typing import Any, Iterable


def read_json(path: Path) -> Any:
    """Lit un fichier JSON (ou None s'il n'existe pas)."""
    if not path.exists():
        return None
    with path.open("rb") as f:
        return json.loads(f.read())


def write_json(path: Path, data: Any) -> None:
    """Écrit un fichier JSON de manière sûre (dossier parent créé si absent)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("wb") as f:
        f.write(json.dumps(data))
    os.replace(tmp, path)


def read_ndjson(path: Path) -> list[Any]:
    """Lit un journal NDJSON; les lignes illisibles sont ignorées."""
    if not path.exists():
        return []
    entries: list[Any] = []
    with path.open("rb") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return entries


def write_ndjson(path: Path, entries: Iterable[Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("wb") as fh:
        for entry in entries:
            fh.write(json.dumps(entry))
            fh.write(b"\n")
    os.replace(tmp, path)
