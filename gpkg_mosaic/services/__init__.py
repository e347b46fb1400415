"""Pipeline stages.

Modules are ordered leaf-first: crs, converter, dispatcher, aggregator,
compressor, and pipeline, which chains them and owns cleanup.
"""
