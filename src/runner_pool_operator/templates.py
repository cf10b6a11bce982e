"""Kubernetes resource templates."""

import copy

from kubernetes import client

from . import crd


def merge_labels(base, overlay):
    """Return a new dict with ``overlay`` applied on top of ``base``."""
    merged = dict(base or {})
    merged.update(overlay or {})
    return merged


def owner_reference(pool):
    """Controller reference making ``pool`` the garbage-collection owner."""
    return client.V1OwnerReference(
        api_version=crd.API_VERSION,
        kind=crd.KIND,
        name=pool.name,
        uid=pool.uid,
        controller=True,
        block_owner_deletion=True,
    )


def pool_metadata(pool, config, name=None, generate_name=None, labels=None, annotations=None):
    """Object metadata stamped with the pool label and owner reference."""
    return client.V1ObjectMeta(
        name=name,
        generate_name=generate_name,
        namespace=pool.namespace,
        labels=merge_labels(labels, {config.pool_label: pool.name}),
        annotations=dict(annotations) if annotations else None,
        owner_references=[owner_reference(pool)],
    )


def create_pod_manifest(pool, config):
    """Create a runner pod manifest from the pool's podTemplateSpec.

    The pod carries the registration finalizer so it cannot disappear before
    its runner is removed from the registry.
    """
    template = pool.spec.pod_template
    template_meta = template.get("metadata") or {}
    metadata = pool_metadata(
        pool,
        config,
        generate_name=config.worker_name_prefix(pool.name),
        labels=template_meta.get("labels"),
        annotations=template_meta.get("annotations"),
    )
    metadata.finalizers = [config.finalizer]

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=metadata,
        spec=copy.deepcopy(template.get("spec") or {}),
    )


def create_token_secret_manifest(pool, credential, config):
    """Create the registration token secret for ``pool``."""
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        type="Opaque",
        metadata=pool_metadata(
            pool,
            config,
            name=config.token_secret_name(pool.name),
            annotations={config.expiry_annotation: credential.expiry_epoch()},
        ),
        string_data={config.token_key: credential.token},
    )
