import pytest

from buildenv.errors import ValidationError
from buildenv.package_managers import APK, APT, package_manager_for


@pytest.mark.parametrize("variant", ["alpine", "alpine3.19"])
def test_alpine_variants_use_apk(variant: str) -> None:
    assert package_manager_for(variant) is APK


@pytest.mark.parametrize("variant", ["bookworm", "bullseye", "trixie"])
def test_debian_variants_use_apt(variant: str) -> None:
    assert package_manager_for(variant) is APT


def test_unknown_variant_is_rejected() -> None:
    with pytest.raises(ValidationError):
        package_manager_for("nanoserver")


def test_apk_installs_without_index_cache() -> None:
    assert APK.install_argv("git") == ("apk", "add", "--no-cache", "git")
    assert APK.cleanup_argv() is None
    assert APK.render_run(("git", "make")) == "apk add --no-cache \\\n    git \\\n    make"


def test_apt_cleanup_runs_through_shell() -> None:
    assert APT.cleanup_argv() == ("sh", "-c", "rm -rf /var/lib/apt/lists/*")
