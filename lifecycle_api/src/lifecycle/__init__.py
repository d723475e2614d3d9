"""
Document lifecycle engine.

- machine: static state machine descriptions and the registry
- definitions: the machines for every document family
- gateway: runs guarded, idempotent, logged transitions
- store: persistence protocol the gateway depends on
- integrity: hash chaining of the transition log
"""
from .definitions import REGISTRY, permission_catalog  # noqa: F401
from .gateway import (  # noqa: F401
    Eligibility,
    TransitionCheck,
    TransitionContext,
    TransitionGateway,
    TransitionResult,
)
from .machine import MachineRegistry, SoDRule, StateMachine, Transition  # noqa: F401
