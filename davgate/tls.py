"""
davgate.tls
~~~~~~~~~~~
TLS for the cheroot listener, built from the ``tls:`` section of the
config file.
"""

from __future__ import annotations

import ssl

from cheroot.ssl.builtin import BuiltinSSLAdapter

from .config import TLSConfig, check_tls_files


def server_ssl_context(tls: TLSConfig) -> ssl.SSLContext:
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.load_cert_chain(tls.cert_file, tls.key_file)
    return ctx


def ssl_adapter(tls: TLSConfig) -> BuiltinSSLAdapter:
    check_tls_files(tls)
    adapter = BuiltinSSLAdapter(tls.cert_file, tls.key_file)
    adapter.context = server_ssl_context(tls)
    return adapter
