__all__ = [
    "ArrayInputProvider",
    "ConstantNode",
    "CostReduction",
    "FeedEntry",
    "Graph",
    "InputProvider",
    "Node",
    "OpNode",
    "PlaceholderNode",
    "Session",
    "ShuffledInputProviderBuilder",
    "TensorArrayMap",
    "VariableNode",
]

from ._graph import ConstantNode, Graph, Node, OpNode, PlaceholderNode, VariableNode
from ._session import CostReduction, FeedEntry, Session, TensorArrayMap
from .input_provider import ArrayInputProvider, InputProvider, ShuffledInputProviderBuilder
