import importlib.util
import inspect
import sys
import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import PORT_ROLES, ConnectionSnapshot, Edge, Node

DEFAULT_NODE_TYPE = "default"

HOOK_NAMES = (
    "on_create",
    "on_update",
    "on_delete",
    "on_connect",
    "on_disconnect",
    "on_connection_change",
)


# --- Behavior Base Class ---
class NodeBehavior:
    """
    ノードタイプの振る舞いを実装するための基底クラス。
    プラグインのimpl.pyはこのクラスを継承し、必要なフックだけをオーバーライドします。
    """

    def template(self, node: Node) -> Any:
        """描画アダプタに渡す表示内容を返します（内容はコアからは不透明）。"""
        return None

    def on_create(self, node: Node):
        pass

    def on_update(self, node: Node, changed: Dict[str, Any]):
        pass

    def on_delete(self, node: Node):
        pass

    def on_connect(self, node: Node, other: Node, edge: Edge):
        pass

    def on_disconnect(self, node: Node, other: Node, edge: Edge):
        pass

    def on_connection_change(self, node: Node, snapshot: ConnectionSnapshot):
        pass


def _default_template(node: Node) -> str:
    title = node.data.get("title", "Node")
    description = node.data.get("description", "Default node")
    return f"{title}\n{description}"


# --- Node Type Definition ---
class NodeType(BaseModel):
    """
    登録済みノードタイプ。テンプレート、ポート構成、スタイル、
    デフォルトデータ、ライフサイクルフックをまとめて保持します。
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    display_name: str = ""
    template: Callable[[Node], Any] = _default_template
    ports: List[str] = Field(default_factory=lambda: list(PORT_ROLES))
    style: Dict[str, Any] = Field(default_factory=dict)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    on_create: Optional[Callable] = None
    on_update: Optional[Callable] = None
    on_delete: Optional[Callable] = None
    on_connect: Optional[Callable] = None
    on_disconnect: Optional[Callable] = None
    on_connection_change: Optional[Callable] = None
    behavior: Optional[NodeBehavior] = Field(default=None, exclude=True)

    def has_port(self, role: str) -> bool:
        return role in self.ports

    def call_hook(self, hook_name: str, *args):
        """フックが登録されていれば呼び出します。例外はコアに伝播させません。"""
        hook = getattr(self, hook_name, None)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as e:
            print(f"[ERROR] Node type '{self.name}' hook {hook_name} failed: {e}")


# --- Node Type Registry ---
class NodeTypeRegistry:
    """タイプ名からノードタイプへのレジストリ。未登録のタイプはdefaultにフォールバックします。"""

    def __init__(self, register_default: bool = True):
        self._types: Dict[str, NodeType] = {}
        if register_default:
            self.register(DEFAULT_NODE_TYPE, template=_default_template, style={"minWidth": "200px"})

    def register(
        self,
        name: str,
        template: Optional[Callable[[Node], Any]] = None,
        ports: Optional[List[str]] = None,
        style: Optional[Dict[str, Any]] = None,
        defaults: Optional[Dict[str, Any]] = None,
        behavior: Optional[NodeBehavior] = None,
        display_name: str = "",
        **hooks: Callable,
    ) -> NodeType:
        """ノードタイプを登録します。hooksにはon_create等のコールバックを渡せます。"""
        unknown = set(hooks) - set(HOOK_NAMES)
        if unknown:
            raise ValueError(f"Unknown node type hooks: {sorted(unknown)}")
        ports = list(PORT_ROLES) if ports is None else list(ports)
        for role in ports:
            if role not in PORT_ROLES:
                raise ValueError(f"Unknown port role '{role}' for node type '{name}'")

        if behavior is not None:
            # 明示的に渡されたフックを優先し、残りはbehaviorのメソッドで補う
            for hook_name in HOOK_NAMES:
                hooks.setdefault(hook_name, getattr(behavior, hook_name))
            if template is None:
                template = behavior.template

        if name in self._types:
            print(f"Warning: Node type '{name}' is being overwritten.")
        node_type = NodeType(
            name=name,
            display_name=display_name or name,
            template=template or (lambda node: name),
            ports=ports,
            style=style or {},
            defaults=defaults or {},
            behavior=behavior,
            **hooks,
        )
        self._types[name] = node_type
        return node_type

    def get(self, name: str) -> NodeType:
        node_type = self._types.get(name) or self._types.get(DEFAULT_NODE_TYPE)
        if node_type is None:
            # destroy後などdefaultも無い場合は空のタイプで代用
            node_type = NodeType(name=name)
        return node_type

    def is_registered(self, name: str) -> bool:
        return name in self._types

    def names(self) -> List[str]:
        return list(self._types.keys())

    def clear(self):
        self._types.clear()


def discover_node_types(base_path: Path, registry: NodeTypeRegistry) -> List[str]:
    """指定されたベースパス以下のnode.tomlを走査し、ノードタイプを登録します。
    構造は 'base_path/category/node_name/node.toml' と、任意で同じ階層の 'impl.py' を想定します。

    Returns:
        登録したノードタイプ名のリスト
    """
    registered = []
    for node_toml_file in sorted(base_path.glob("**/node.toml")):
        try:
            with node_toml_file.open("rb") as f:
                node_config = tomllib.load(f)

            name = node_config["name"]

            behavior = None
            impl_file = node_toml_file.parent / "impl.py"
            if impl_file.exists():
                behavior = _load_behavior(impl_file, base_path)
                if behavior is None:
                    print(f"Warning: No NodeBehavior subclass found in {impl_file}. Skipping.")
                    continue

            registry.register(
                name,
                ports=node_config.get("ports"),
                style=node_config.get("style", {}),
                defaults=node_config.get("defaults", {}),
                behavior=behavior,
                display_name=node_config.get("display_name", name),
            )
            registered.append(name)
            print(f"Info: Registered node type: {name}")

        except Exception as e:
            print(f"Error processing node type from {node_toml_file}: {e}")
    return registered


def _load_behavior(impl_file: Path, base_path: Path) -> Optional[NodeBehavior]:
    module_name = f"nodes.{'.'.join(impl_file.relative_to(base_path).parent.parts)}"
    spec = importlib.util.spec_from_file_location(module_name, impl_file)
    if spec is None:
        return None
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    for _, obj in inspect.getmembers(module):
        if inspect.isclass(obj) and issubclass(obj, NodeBehavior) and obj is not NodeBehavior:
            return obj()
    return None
