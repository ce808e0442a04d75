"""
Support for writing scripts using the visor library.

The expected usage of core visor types is like:

    from visor import VisorService

The scripting package is not part of the core library and
contains extensions. Therefore, the expected usage is:

    from visor.scripting import visor_exception

That is, each module whose name starts with `visor_` in this
package is an independent extension you may optionally load
when writing visor based scripts.
"""
