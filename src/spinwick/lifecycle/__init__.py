"""SpinWick environment lifecycle: create, update and destroy.

The controller selects a strategy per environment kind (plain cloud
installation, cloud installation issued through CWS, CWS deployed into a
Kubernetes namespace), runs it, and turns the returned LifecycleRequest
into comments, label changes, events and operator escalation.
"""
