"""Code execution module — validates, wraps and runs generated analysis code.

Provides the lexical code validator, the guest-side safety harness, and the
container (or local subprocess) sandbox used to execute it once per request.
"""
