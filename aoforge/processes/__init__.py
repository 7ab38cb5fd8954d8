"""Process management: supervision of the external aos runtime.

This package provides:
- ProcessSupervisor: spawn, track, evaluate and stop one aos process
- TickScheduler: periodic evaluation with bounded retries and escalation
- ProcessStore: durable records of started processes, keyed by name
"""
