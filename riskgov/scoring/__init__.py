"""
Risk scoring: DIME control effectiveness, residual risk and appetite.

- effectiveness: control assessment → ratio in [0, 1]
- residual:      inherent likelihood/impact + controls → residual scores
- appetite:      tolerance states + appetite level → per-risk appetite decision
- service:       persists residual results on risks
"""
