"""Simulated host pool and simulation runner"""

from .engine import BufferSimulationEngine
from .pool import SimulatedPoolHost

__all__ = ["BufferSimulationEngine", "SimulatedPoolHost"]
