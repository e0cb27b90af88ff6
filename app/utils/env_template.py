from typing import List, Union

from ..errors import DefinitionError

ENV_SYMBOL = "env!("

# A parsed template is a list of literal text chunks and env variable names.
# Names are wrapped in EnvName so they can't be mistaken for literal text.


class EnvName(str):
    pass


def split_template(text: str) -> List[Union[str, EnvName]]:
    parts: List[Union[str, EnvName]] = []
    rest = text
    while True:
        index = rest.find(ENV_SYMBOL)
        if index < 0:
            if rest:
                parts.append(rest)
            return parts

        if index > 0:
            parts.append(rest[:index])

        rest = rest[index + len(ENV_SYMBOL):]
        close = rest.find(")")
        if close < 0:
            raise DefinitionError(f"invalid env!() syntax in {text!r}")

        name = rest[:close].strip()
        if not name:
            raise DefinitionError(f"empty env!() name in {text!r}")

        parts.append(EnvName(name))
        rest = rest[close + 1:]
