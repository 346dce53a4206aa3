from typing import Any
from typing import Dict
from typing import List
from typing import Type
from typing import TypeVar
from typing import Callable
from typing import Optional
from torch.nn import Module
from cftool.misc import safe_execute
from cftool.misc import register_core
from cftool.misc import shallow_copy_dict


TModule = TypeVar("TModule", bound=Type[Module])

# every building block of a recommender, keyed by `{namespace}.{name}`
module_dict: Dict[str, Type[Module]] = {}


def register_module(name: str, **kwargs: Any) -> Callable[[TModule], TModule]:
    return register_core(name, module_dict, **kwargs)


def build_module(
    name: str,
    *,
    config: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> Module:
    """
    Build a registered module. `kwargs` take precedence over `config`, and
    arguments that the module does not accept are dropped.
    """

    base = module_dict.get(name)
    if base is None:
        raise ValueError(
            f"module '{name}' is not registered, "
            f"available modules are {sorted(module_dict)}"
        )
    kw = shallow_copy_dict(config or {})
    kw.update(kwargs)
    return safe_execute(base, kw)


class PrefixModules:
    """A namespace of `module_dict`, e.g. `ml.wnd`."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix

    def key(self, name: str) -> str:
        return f"{self.prefix}.{name}"

    @property
    def names(self) -> List[str]:
        start = len(self.prefix) + 1
        return [k[start:] for k in module_dict if k.startswith(f"{self.prefix}.")]

    def has(self, name: str) -> bool:
        return self.key(name) in module_dict

    def get(self, name: str) -> Optional[Type[Module]]:
        return module_dict.get(self.key(name))

    def register(self, name: str, **kwargs: Any) -> Callable[[TModule], TModule]:
        return register_module(self.key(name), **kwargs)

    def build(
        self,
        name: str,
        *,
        config: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Module:
        return build_module(self.key(name), config=config, **kwargs)


ml_modules = PrefixModules("ml")


def register_ml_module(name: str, **kwargs: Any) -> Callable[[TModule], TModule]:
    return ml_modules.register(name, **kwargs)


def build_ml_module(
    name: str,
    *,
    config: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> Module:
    return ml_modules.build(name, config=config, **kwargs)


class Lambda(Module):
    def __init__(self, fn: Callable, name: Optional[str] = None):
        super().__init__()
        self.name = name
        self.fn = fn

    def extra_repr(self) -> str:
        return "" if self.name is None else self.name

    def forward(self, *args: Any, **kwargs: Any) -> Any:
        return self.fn(*args, **kwargs)


__all__ = [
    "module_dict",
    "register_module",
    "build_module",
    "PrefixModules",
    "ml_modules",
    "register_ml_module",
    "build_ml_module",
    "Lambda",
]
