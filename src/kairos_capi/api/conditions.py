# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/api/conditions.py

# KairosConfig condition types
BOOTSTRAP_READY_CONDITION = "BootstrapReady"
DATA_SECRET_AVAILABLE_CONDITION = "DataSecretAvailable"

# KairosConfig reasons
WAITING_FOR_CLUSTER_INFRASTRUCTURE_REASON = "WaitingForClusterInfrastructure"
WAITING_FOR_CONTROL_PLANE_INITIALIZATION_REASON = "WaitingForControlPlaneInitialization"
WAITING_FOR_MACHINE_REASON = "WaitingForMachine"
BOOTSTRAP_DATA_SECRET_GENERATION_FAILED_REASON = "BootstrapDataSecretGenerationFailed"
BOOTSTRAP_DATA_SECRET_AVAILABLE_REASON = "BootstrapDataSecretAvailable"
BOOTSTRAP_SUCCEEDED_REASON = "BootstrapSucceeded"
BOOTSTRAP_FAILED_REASON = "BootstrapFailed"

# KairosControlPlane condition types
AVAILABLE_CONDITION = "Available"
MACHINES_CREATED_CONDITION = "MachinesCreated"

# KairosControlPlane reasons
WAITING_FOR_MACHINES_REASON = "WaitingForMachines"
WAITING_FOR_MACHINES_READY_REASON = "WaitingForMachinesReady"
CONTROL_PLANE_INITIALIZATION_SUCCEEDED_REASON = "ControlPlaneInitializationSucceeded"
MACHINE_CREATION_FAILED_REASON = "MachineCreationFailed"
SCALING_UP_REASON = "ScalingUp"
SCALING_DOWN_REASON = "ScalingDown"
