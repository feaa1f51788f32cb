"""
Phase registry: the fixed workflow phases and the legal transition graph.

Forward path:
  solicitacao → aprovacao_a1 → cotacao → aprovacao_a2 → pedido_compra
  → recebimento → conf_fiscal → conclusao_compra → arquivado

Correction edges go one step back to the phase that produced the current
one. Any non-terminal phase may be archived. arquivado is terminal.
"""

from enum import Enum
from typing import Optional


class Phase(str, Enum):
    SOLICITACAO = "solicitacao"
    APROVACAO_A1 = "aprovacao_a1"
    COTACAO = "cotacao"
    APROVACAO_A2 = "aprovacao_a2"
    PEDIDO_COMPRA = "pedido_compra"
    RECEBIMENTO = "recebimento"
    CONF_FISCAL = "conf_fiscal"
    CONCLUSAO_COMPRA = "conclusao_compra"
    ARQUIVADO = "arquivado"


class Gate(str, Enum):
    A1 = "A1"
    A2 = "A2"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)

INITIAL_PHASE = Phase.SOLICITACAO
TERMINAL_PHASE = Phase.ARQUIVADO

# The purchase order only exists from this phase onwards; regressing below it
# voids the order.
PURCHASE_ORDER_PHASE = Phase.PEDIDO_COMPRA

CORRECTION_EDGES: frozenset[tuple[Phase, Phase]] = frozenset({
    (Phase.APROVACAO_A1, Phase.SOLICITACAO),
    (Phase.APROVACAO_A2, Phase.COTACAO),
    (Phase.PEDIDO_COMPRA, Phase.APROVACAO_A2),
    (Phase.PEDIDO_COMPRA, Phase.COTACAO),
    (Phase.RECEBIMENTO, Phase.PEDIDO_COMPRA),
    (Phase.CONF_FISCAL, Phase.RECEBIMENTO),
})

GATE_PHASES: dict[Gate, Phase] = {
    Gate.A1: Phase.APROVACAO_A1,
    Gate.A2: Phase.APROVACAO_A2,
}

# Where a rejected gate sends the request when it is not archived.
GATE_CORRECTION_PHASES: dict[Gate, Phase] = {
    Gate.A1: Phase.SOLICITACAO,
    Gate.A2: Phase.COTACAO,
}


def phase_index(phase: Phase) -> int:
    return PHASE_ORDER.index(Phase(phase))


def is_known_phase(value: str) -> bool:
    return value in Phase._value2member_map_


def next_phase(current: Phase) -> Optional[Phase]:
    """Successor on the default forward path, None for the terminal phase."""
    idx = phase_index(current)
    if idx + 1 >= len(PHASE_ORDER):
        return None
    return PHASE_ORDER[idx + 1]


def is_forward(current: Phase, target: Phase) -> bool:
    return next_phase(current) == Phase(target)


def is_regression(current: Phase, target: Phase) -> bool:
    return (Phase(current), Phase(target)) in CORRECTION_EDGES


def is_valid_transition(current: Phase, target: Phase) -> bool:
    if not is_known_phase(current) or not is_known_phase(target):
        return False
    current, target = Phase(current), Phase(target)
    if current == TERMINAL_PHASE or current == target:
        return False
    if target == TERMINAL_PHASE:
        return True
    return is_forward(current, target) or is_regression(current, target)


def gate_for_phase(phase: Phase) -> Optional[Gate]:
    for gate, gate_phase in GATE_PHASES.items():
        if gate_phase == phase:
            return gate
    return None


def gate_exited(current: Phase, target: Phase) -> Optional[Gate]:
    """Gate whose approval is required to move current → target, if any."""
    gate = gate_for_phase(Phase(current))
    if gate is not None and is_forward(current, target):
        return gate
    return None


def voids_purchase_order(current: Phase, target: Phase) -> bool:
    """
    True when moving current → target must delete the request's purchase order.

    Regressing below pedido_compra voids it, and so does archiving a request
    whose order was never issued.
    """
    po_idx = phase_index(PURCHASE_ORDER_PHASE)
    if Phase(target) == TERMINAL_PHASE:
        return phase_index(current) < po_idx
    return is_regression(current, target) and phase_index(target) < po_idx
