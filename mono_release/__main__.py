from mono_release.cli import cli

cli()
