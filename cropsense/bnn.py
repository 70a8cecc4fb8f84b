"""
BNN Inference Engine

4 -> 4 -> 2 binarized network. Weights and activations are +1/-1 stored as
bits, so each dot product becomes an XNOR followed by a popcount:

    hidden[i] = 1 if popcount(~(x ^ W_IH[i]) & 0xF) + BIAS_H[i] >= 0
    score[k]  = popcount(~(hidden ^ W_HO[k]) & 0xF)
    prediction = score[1] > score[0]        (ties go to class 0)

Pipeline (one stage per system clock cycle):

    IDLE/DONE --trigger--> COMPUTE_HIDDEN --> COMPUTE_OUTPUT --> DONE

A trigger latches the input vector and clears ready; ready rises two cycles
later and stays high until the next trigger. Triggers that arrive while a
computation is in flight are dropped.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional, Tuple

import numpy as np

from .config import NUM_HIDDEN, NUM_INPUTS, NUM_OUTPUTS, WeightConfiguration
from .sync import EdgeDetector

logger = logging.getLogger(__name__)


class EngineState(IntEnum):
    IDLE = 0
    COMPUTE_HIDDEN = 1
    COMPUTE_OUTPUT = 2
    DONE = 3


@dataclass(frozen=True)
class InferenceResult:
    input_vector: int
    hidden: int
    scores: Tuple[int, ...]
    prediction: int


def xnor_popcount(a: int, b: int, width: int = NUM_INPUTS) -> int:
    """Number of bit positions where a and b agree"""
    mask = (1 << width) - 1
    return bin(~(a ^ b) & mask).count('1')


def hidden_layer(x: int, weights: WeightConfiguration) -> int:
    hidden = 0
    for i in range(NUM_HIDDEN):
        if xnor_popcount(x, weights.w_ih[i]) + weights.bias_h[i] >= 0:
            hidden |= 1 << i
    return hidden


def output_layer(hidden: int, weights: WeightConfiguration) -> Tuple[int, ...]:
    return tuple(xnor_popcount(hidden, weights.w_ho[k], NUM_HIDDEN)
                 for k in range(NUM_OUTPUTS))


def evaluate(x: int, weights: WeightConfiguration) -> InferenceResult:
    """Single-call evaluation, same arithmetic as the pipelined engine"""
    hidden = hidden_layer(x, weights)
    scores = output_layer(hidden, weights)
    return InferenceResult(input_vector=x, hidden=hidden, scores=scores,
                           prediction=1 if scores[1] > scores[0] else 0)


def _to_signs(value: int, width: int) -> np.ndarray:
    return np.array([((value >> j) & 1) * 2 - 1 for j in range(width)], dtype=np.int32)


def evaluate_signs(x: int, weights: WeightConfiguration) -> InferenceResult:
    """
    Reference evaluation with +1/-1 dot products.

    For n-bit vectors, popcount(xnor(a, b)) == (n + dot(a, b)) / 2, so this
    must agree bit for bit with evaluate().
    """
    xs = _to_signs(x, NUM_INPUTS)
    matches = (NUM_INPUTS + weights.ih_signs() @ xs) // 2
    fired = matches + np.array(weights.bias_h) >= 0
    hidden = int(sum(1 << i for i in np.flatnonzero(fired)))

    hs = _to_signs(hidden, NUM_HIDDEN)
    scores = (NUM_HIDDEN + weights.ho_signs() @ hs) // 2
    scores = tuple(int(s) for s in scores)
    return InferenceResult(input_vector=x, hidden=hidden, scores=scores,
                           prediction=1 if scores[1] > scores[0] else 0)


class BnnInferenceEngine:
    """
    Two-stage pipelined BNN.

    The input vector is pulled from input_source when a trigger is accepted,
    so the engine always classifies the freshest features.
    """

    def __init__(self, weights: WeightConfiguration,
                 input_source: Optional[Callable[[], int]] = None):
        self.weights = weights
        self.input_source = input_source
        self._trigger_edge = EdgeDetector()
        self.reset()

    def reset(self):
        self._trigger_edge.reset()
        self.state = EngineState.IDLE
        self.input_vector = 0
        self.hidden = 0
        self.scores: Tuple[int, ...] = (0,) * NUM_OUTPUTS
        self.prediction = 0
        self.ready = False
        self.inferences = 0
        self.dropped_triggers = 0
        self.last_result: Optional[InferenceResult] = None

    def tick(self, trigger: int, input_vector: Optional[int] = None) -> bool:
        """
        Advance one system clock cycle. Returns the ready flag.

        input_vector overrides input_source for this cycle; it is only read
        when a trigger is accepted.
        """
        self._trigger_edge.tick(trigger)
        triggered = self._trigger_edge.rose

        if self.state in (EngineState.IDLE, EngineState.DONE):
            if triggered:
                if input_vector is None:
                    input_vector = self.input_source() if self.input_source else 0
                self.input_vector = input_vector & ((1 << NUM_INPUTS) - 1)
                self.state = EngineState.COMPUTE_HIDDEN
                self.ready = False
            return self.ready

        if triggered:
            self.dropped_triggers += 1
            logger.debug("trigger dropped in %s", self.state.name)

        if self.state == EngineState.COMPUTE_HIDDEN:
            self.hidden = hidden_layer(self.input_vector, self.weights)
            self.state = EngineState.COMPUTE_OUTPUT
        elif self.state == EngineState.COMPUTE_OUTPUT:
            self.scores = output_layer(self.hidden, self.weights)
            self.prediction = 1 if self.scores[1] > self.scores[0] else 0
            self.state = EngineState.DONE
            self.ready = True
            self.inferences += 1
            self.last_result = InferenceResult(self.input_vector, self.hidden,
                                               self.scores, self.prediction)
            logger.debug("inference %d: x=0b%04b hidden=0b%04b scores=%s prediction=%d",
                         self.inferences, self.input_vector, self.hidden,
                         self.scores, self.prediction)

        return self.ready
