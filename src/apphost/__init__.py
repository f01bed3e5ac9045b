"""
spine-apphost - dependency-ordered startup of local application stacks.

Declare data stores, message brokers, containers and the hosted application
process in one manifest; apphost builds the dependency graph, resolves
parameters, starts every resource concurrently in dependency order and waits
for each to become ready before its dependents start.

Subpackages:
- apphost.core: errors, logging, settings, value sources
- apphost.orchestration: registry, graph builder, resolver, prober,
  lifecycle manager and scheduler
- apphost.handlers: resource-kind handlers (docker containers, processes)
- apphost.cli: the ``apphost`` command line
"""

__version__ = "0.2.0"
