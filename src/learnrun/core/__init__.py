"""Core learning-run modules.

Modules:
- answer_validator: Deterministic literal-answer grammar
- attempt_ledger: Gapless attempt numbering and history queries
- sequencer: Wrap-around question selection
- feedback: Template feedback with optional provider enrichment
- level_advancer: Auto-mode mastery and level progression
- run_lifecycle: Run state machine and answer submission
- autopilot: Provider-driven answering job
- curriculum_loader: YAML curriculum import
- errors: Error taxonomy
"""
