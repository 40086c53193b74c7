"""
Appetite governance: tolerance evaluation, breaches, coverage, rollups.

Pure components:
- evaluator:   tolerance definition + observation history → zone and breach decision
- coverage:    indicator links → gap / fragile / good
- aggregation: breach severities → category and enterprise status

Stateful components:
- breaches:    breach lifecycle (atomic detection upsert, transitions, board exceptions)
- escalation:  severity-based notification with bounded, non-fatal delivery
- service:     observation → evaluation → breach, bulk recalculation
"""
