"""Default values and constants for tenant-operator."""

import os

# API Group and Version
API_GROUP = "neurallog.io"
API_VERSION = "v1"
PLURAL = "tenants"
KIND = "Tenant"

# Operator name
OPERATOR_NAME = "tenant-operator"

# Finalizer blocking Tenant removal until external cleanup is done
FINALIZER = "neurallog.io/finalizer"

# Namespace naming
NAMESPACE_PREFIX = "tenant-"

# =============================================================================
# Component Images (configurable via environment variables)
# =============================================================================

REDIS_IMAGE = os.getenv("REDIS_IMAGE", "redis:7-alpine")
SERVER_IMAGE = os.getenv("SERVER_IMAGE", "neurallog/server:latest")
REGISTRY_IMAGE = os.getenv("REGISTRY_IMAGE", "neurallog/registry:latest")

# =============================================================================
# Identity Service
# =============================================================================

IDENTITY_SERVICE_URL = os.getenv("IDENTITY_SERVICE_URL", "http://auth:3000")
IDENTITY_SERVICE_TIMEOUT = float(os.getenv("IDENTITY_SERVICE_TIMEOUT", "10"))
IDENTITY_ADMIN_USER = "system"

# =============================================================================
# Reconciliation Scheduling
# =============================================================================

RESYNC_INTERVAL = float(os.getenv("RESYNC_INTERVAL", "30"))
REQUEUE_DELAY = float(os.getenv("REQUEUE_DELAY", "1"))
RECONCILE_TIMEOUT = float(os.getenv("RECONCILE_TIMEOUT", "60"))
MAX_CONCURRENT_RECONCILES = int(os.getenv("MAX_CONCURRENT_RECONCILES", "4"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "10"))
RETRY_BACKOFF = float(os.getenv("RETRY_BACKOFF", "10"))
API_REQUEST_TIMEOUT = float(os.getenv("API_REQUEST_TIMEOUT", "30"))

# =============================================================================
# Default Resources
# =============================================================================

REDIS_CPU_REQUEST = "100m"
REDIS_MEMORY_REQUEST = "128Mi"
REDIS_CPU_LIMIT = "300m"
REDIS_MEMORY_LIMIT = "256Mi"
REDIS_STORAGE = "1Gi"

SERVER_CPU_REQUEST = "100m"
SERVER_MEMORY_REQUEST = "128Mi"
SERVER_CPU_LIMIT = "500m"
SERVER_MEMORY_LIMIT = "512Mi"

REGISTRY_CPU_REQUEST = "50m"
REGISTRY_MEMORY_REQUEST = "64Mi"
REGISTRY_CPU_LIMIT = "200m"
REGISTRY_MEMORY_LIMIT = "256Mi"

DEFAULT_REPLICAS = 1
DEFAULT_BASE_DOMAIN = os.getenv("DEFAULT_BASE_DOMAIN", "neurallog.local")

# =============================================================================
# Ports
# =============================================================================

REDIS_PORT = 6379
SERVER_PORT = 3030
REGISTRY_PORT = 3031

HEALTH_PATH = "/health"

# =============================================================================
# Labels
# =============================================================================

LABEL_APP = "app"
LABEL_TENANT = "neurallog.io/tenant"
LABEL_COMPONENT = "neurallog.io/component"
LABEL_MANAGED_BY = "neurallog.io/managed-by"
LABEL_POLICY = "neurallog.io/policy"
LABEL_NAMESPACE_NAME = "kubernetes.io/metadata.name"

APP_REDIS = "redis"
APP_SERVER = "neurallog-server"
APP_REGISTRY = "neurallog-registry"
