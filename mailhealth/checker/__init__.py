"""
Checker package for the mail health scanner.

Provides the protocol check runners (MX, SPF, DKIM, DMARC, SMTP, MTA-STS,
TLS-RPT, BIMI, blacklist, compliance), the result cache, the scoring
aggregator and the orchestrating engine.
"""
