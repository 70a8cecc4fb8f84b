"""
Decision & Output Mapper

The control channel alert can only raise the decision to "ready to
harvest"; it never forces "not ready". The buzzer sounds only while a valid
result is held and the effective prediction is set.

Output bus layout (one status byte):
    [3:0] hidden activations
    [4]   effective prediction
    [5]   ready
    [6]   buzzer
    [7]   alert
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DecisionOutputs:
    effective_prediction: int
    ready: int
    hidden: int
    buzzer: int
    alert: int

    def to_byte(self) -> int:
        return ((self.hidden & 0x0F)
                | (self.effective_prediction & 1) << 4
                | (self.ready & 1) << 5
                | (self.buzzer & 1) << 6
                | (self.alert & 1) << 7)

    @classmethod
    def from_byte(cls, value: int) -> 'DecisionOutputs':
        return cls(
            effective_prediction=(value >> 4) & 1,
            ready=(value >> 5) & 1,
            hidden=value & 0x0F,
            buzzer=(value >> 6) & 1,
            alert=(value >> 7) & 1,
        )


def map_decision(prediction: int, ready: bool, hidden: int, alert: bool) -> DecisionOutputs:
    effective = 1 if (prediction or alert) else 0
    ready_bit = 1 if ready else 0
    return DecisionOutputs(
        effective_prediction=effective,
        ready=ready_bit,
        hidden=hidden & 0x0F,
        buzzer=ready_bit & effective,
        alert=1 if alert else 0,
    )
