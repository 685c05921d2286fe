"""
Timeout and retry constants for kubestep.

Centralizes timeout values to ensure consistency across the codebase
and make tuning easier.
"""

from __future__ import annotations

# =============================================================================
# Step Retry Configuration
# =============================================================================

# Attempts per provisioning step before it is considered exhausted
DEFAULT_MAX_ATTEMPTS = 5

# Fixed delay between attempts
DEFAULT_RETRY_DELAY_S = 5.0

# Exponential backoff multiplier
DEFAULT_RETRY_BACKOFF = 2.0

# Upper bound for a single exponential backoff delay
DEFAULT_RETRY_MAX_DELAY_S = 60.0

# Fraction of each exponential delay that may be randomized away
DEFAULT_RETRY_JITTER = 0.1

# =============================================================================
# Condition Polling
# =============================================================================

# Interval between readiness probes
POLL_INTERVAL_S = 10.0

# Timeout for pods/deployments to become ready (kubectl wait --timeout)
WAIT_TIMEOUT_S = 300

# =============================================================================
# Subprocess Timeouts
# =============================================================================

# Default timeout for apt, kubeadm and kubectl invocations
SUBPROCESS_DEFAULT_TIMEOUT_S = 900

# Short probes (dpkg -s, command lookups, kubectl get)
SUBPROCESS_PROBE_TIMEOUT_S = 30

# Reading what is left in the output pipes after a killed command
SUBPROCESS_DRAIN_TIMEOUT_S = 5

# The Nephio installer provisions the whole management stack
NEPHIO_INSTALL_TIMEOUT_S = 3 * 60 * 60

# =============================================================================
# HTTP Client Timeouts
# =============================================================================

# Timeout for fetching release keys and installer scripts
HTTP_CLIENT_TIMEOUT_S = 30.0

# =============================================================================
# Kubernetes API Timeouts
# =============================================================================

# Connect timeout for K8s API calls
K8S_API_CONNECT_TIMEOUT_S = 3

# Read timeout for K8s API calls
K8S_API_READ_TIMEOUT_S = 5

# =============================================================================
# OTel
# =============================================================================

# Timeout for TracerProvider flush at the end of a run
OTEL_FLUSH_TIMEOUT_MS = 5000
