"""Engine adapters: parsers, transports and the engine registry.

Import concrete pieces from their modules (`airuntime.runners.claude`,
`airuntime.runners.registry`, ...); the registry depends on the session
lifecycle, which itself depends on this package's pipeline helpers.
"""
