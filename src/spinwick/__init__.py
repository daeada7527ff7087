"""SpinWick: preview environments for pull requests.

This package creates, updates and destroys ephemeral test servers driven by
GitHub webhooks, providing:
- GitHub webhook intake, signature validation and slash commands
- Lifecycle strategies for plain cloud, CWS-backed cloud and Kubernetes
  namespace environments
- Installation state waiting over provisioner webhooks or polling
- Image availability waiting against the Docker registry
- Comment and label reconciliation on pull requests
- Lifecycle events, Prometheus metrics and operator escalation
"""
