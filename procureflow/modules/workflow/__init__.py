from .state_machine import WorkflowStateMachine

__all__ = ["WorkflowStateMachine"]
