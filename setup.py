from setuptools import setup, find_packages
from pathlib import Path

# ===== README.md =====
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

# ===== Version from polyauth/version.py =====
version_file = Path(__file__).parent / "polyauth/version.py"
version = "0.0.0"  # fallback
if version_file.exists():
    namespace = {}
    with open(version_file, "r", encoding="utf-8") as f:
        exec(f.read(), namespace)
        version = namespace.get("__version__", version)

# ===== Setup =====
setup(
    name="polyauth",
    version=version,
    author="PolyAuth",
    author_email="noreply@example.com",
    description="Per-route credential resolution, injection and refresh for httpx and requests",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "examples", "docs"]),
    include_package_data=True,
    zip_safe=False,
    python_requires=">=3.8",
    install_requires=[
        "httpx>=0.26.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
            "black>=23.12.0",
            "flake8>=7.0.0",
            "mypy>=1.8.0",
        ],
    },
    entry_points={"console_scripts": []},
)
