"""External collaborator clients."""

from __future__ import annotations

import functools
import pathlib
from dataclasses import dataclass

import yaml

from dupefinder.schemas import PRODUCT_CATEGORIES

PROMPTS_PATH = pathlib.Path(__file__).with_name("prompts.yml")


@dataclass(slots=True)
class Prompt:
    system: str
    user: str

    def messages(self, **values: object) -> list[dict[str, str]]:
        values.setdefault("categories", ", ".join(PRODUCT_CATEGORIES))
        return [
            {"role": "system", "content": self.system.format(**values)},
            {"role": "user", "content": self.user.format(**values)},
        ]


@functools.lru_cache(maxsize=None)
def load_prompts(path: pathlib.Path = PROMPTS_PATH) -> dict[str, Prompt]:
    data = yaml.safe_load(path.read_text())
    return {name: Prompt(**item) for name, item in data.items()}
