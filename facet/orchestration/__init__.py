"""
Orchestration Package

Strategy planning, timed step execution with crisis escalation, result
synthesis and the end-to-end turn orchestrator. Import from the submodules
(``facet.orchestration.engine``, ``facet.orchestration.planner``, ...).
"""
