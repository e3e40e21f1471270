"""Well-known object names, namespaces and annotations."""

# Annotation carrying the digest of a provider's render inputs.
CONFIG_HASH_ANNOTATION = "networkoperator.openshift.io/config-hash"

# Objects carrying this annotation are created if missing but never updated.
CREATE_WAIT_ANNOTATION = "networkoperator.openshift.io/create-wait"

KURYR_NAMESPACE = "openshift-kuryr"
KURYR_ADMISSION_CONTROLLER_SECRET = "kuryr-dns-admission-controller-secret"
KURYR_WEBHOOK_SECRET = "kuryr-webhook-secret"

KUBE_PROXY_NAMESPACE = "openshift-kube-proxy"

MULTUS_NAMESPACE = "openshift-multus"
MULTUS_VALIDATING_WEBHOOK = "multus.openshift.io"

NODE_IDENTITY_NAMESPACE = "openshift-network-node-identity"
NODE_IDENTITY_WEBHOOK = "network-node-identity.openshift.io"
NODE_IDENTITY_WEBHOOK_PORT = "9743"

MANAGEMENT_CLUSTER_NAME = "management"
