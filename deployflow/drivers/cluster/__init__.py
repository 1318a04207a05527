"""Cluster drivers."""

from deployflow.drivers.cluster.kubectl import KubectlCluster

__all__ = ["KubectlCluster"]
