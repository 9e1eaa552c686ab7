from metrics_report.cli import cli

cli()
