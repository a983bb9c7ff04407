"""Build-file emitters for environment definitions."""

from .emit_dockerfile import DockerfileEmission, emit_dockerfile, render_dockerfile

__all__ = ["DockerfileEmission", "emit_dockerfile", "render_dockerfile"]
