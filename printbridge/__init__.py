"""PrintBridge - field agent between the local print spooler and a remote print-job service.

PrintBridge runs on a machine with CUPS (Raspberry Pi, desktop, etc.). It keeps the
remote printer directory in sync with the local print queues, receives print jobs
either by polling or over a realtime push channel, submits them to the local spooler
and reports their outcome back to the remote service.

Usage:
    printbridge start
    printbridge printers
    printbridge print --file label.pdf --printer HP-Office
    printbridge print --job 42
    printbridge status

For systemd service installation:
    printbridge install-service
"""

__version__ = "0.1.0"
