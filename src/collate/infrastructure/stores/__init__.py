# Infrastructure Card Store Adapters Package
from .http_store import HttpCardStore
from .yaml_store import YamlCardStore

__all__ = ["YamlCardStore", "HttpCardStore"]
