"""Harvest coordination across aggregators."""

from apmagent.harvest.harvester import Harvester

__all__ = ["Harvester"]
