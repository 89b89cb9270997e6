from .agent import UITreeAgent
from .tree import UINode, UITreeHost

__all__ = ["UITreeAgent", "UINode", "UITreeHost"]
