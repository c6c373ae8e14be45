"""Prescreen programs."""

from prescreen.programs.service import ProgramCreate, ProgramService, ProgramUpdate

__all__ = ["ProgramCreate", "ProgramService", "ProgramUpdate"]
