import itertools
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

INPUT = "input"
OUTPUT = "output"
PORT_ROLES = (INPUT, OUTPUT)

WORKFLOW_FORMAT_VERSION = "1.0.0"


class IdAllocator:
    """プレフィックス付きの連番IDを払い出します。"""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self._counter = itertools.count(1)

    def next(self) -> str:
        return f"{self.prefix}-{next(self._counter)}"

    def reset(self):
        self._counter = itertools.count(1)


class Position(BaseModel):
    """キャンバス座標系でのノード位置。"""
    x: float = 0.0
    y: float = 0.0

    def clamped(self) -> "Position":
        return Position(x=max(0.0, self.x), y=max(0.0, self.y))


class EdgeStyle(BaseModel):
    """エッジの描画スタイル。未知のキーもそのまま保持します。"""
    model_config = ConfigDict(extra="allow")

    color: str = "#6b7280"
    width: float = 2
    dashed: bool = False
    animated: bool = False


class ConnectionSummary(BaseModel):
    """隣接ノードの要約（接続スナップショットの要素）。"""
    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    edge_id: str


class ConnectionSnapshot(BaseModel):
    """ノードの入出力接続をまとめたスナップショット。"""
    inputs: List[ConnectionSummary] = Field(default_factory=list)
    outputs: List[ConnectionSummary] = Field(default_factory=list)

    @property
    def input_count(self) -> int:
        return len(self.inputs)

    @property
    def output_count(self) -> int:
        return len(self.outputs)


class Node(BaseModel):
    """グラフを構成するノードのインスタンスを表すモデル。"""
    id: str
    type: str = "default"
    position: Position = Field(default_factory=Position)
    data: Dict[str, Any] = Field(default_factory=dict)
    connection_snapshot: Optional[ConnectionSnapshot] = Field(default=None, exclude=True)
    handle: Any = Field(default=None, exclude=True)  # 描画側が所有する不透明なハンドル


class Edge(BaseModel):
    """ノード間の有向接続を表すモデル。"""
    id: str
    source: str
    target: str
    style: EdgeStyle = Field(default_factory=EdgeStyle)
    data: Dict[str, Any] = Field(default_factory=dict)
    handle: Any = Field(default=None, exclude=True)


# --- Interchange format ---
class WorkflowNode(BaseModel):
    id: str
    type: str = "default"
    position: Optional[Dict[str, float]] = None  # 省略時はランダム配置
    data: Dict[str, Any] = Field(default_factory=dict)


class WorkflowEdge(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    style: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)


class WorkflowDocument(BaseModel):
    """エクスポート/インポート用のワークフロー文書。"""
    format_version: str = WORKFLOW_FORMAT_VERSION
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
