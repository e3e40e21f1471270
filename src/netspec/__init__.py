"""Cluster network-provider configuration core.

This package holds the pieces of the network configuration pipeline that do
not depend on any particular provider:

* the immutable data model describing the desired network and the facts
  discovered before rendering (:mod:`netspec.config`);
* subnet containment/overlap arithmetic (:mod:`netspec.subnet`);
* release version comparison used to gate upgrade behaviour
  (:mod:`netspec.versions`);
* cluster-wide IP pool validation and change checks
  (:mod:`netspec.validation`);
* kube-proxy argument merging and configuration generation
  (:mod:`netspec.kubeproxy`); and
* object specifications plus the content digest stamped onto workloads
  (:mod:`netspec.objects`, :mod:`netspec.hashing`).

Everything is pure Python and performs no I/O so it can be exercised in unit
tests without a cluster.
"""

from .config import BootstrapFacts, NetworkSpec, NetworkType, RenderSettings  # noqa: F401
from .objects import ObjectSpec  # noqa: F401

__all__ = ["BootstrapFacts", "NetworkSpec", "NetworkType", "ObjectSpec", "RenderSettings"]
