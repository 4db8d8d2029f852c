"""Reconcilers for ContaboCluster and ContaboMachine."""

from capc.controllers.base import DONE, Reconciler, Result
from capc.controllers.cluster import ClusterReconciler
from capc.controllers.machine import MachineReconciler

__all__ = ["DONE", "ClusterReconciler", "MachineReconciler", "Reconciler", "Result"]
