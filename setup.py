from setuptools import setup, find_packages

setup(
    name="bloodtest-survival",
    version="1.0.0",
    description="Blood-test biomarker selection and survival classification pipeline",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
        "Programming Language :: Python :: 3",
    ],
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.21.0",
        "pandas>=1.5.0",
        "scikit-learn>=1.2.0",
        "pyyaml>=5.4.0",
        "joblib>=1.1.0",
        "mlflow>=2.0.0",
        "pydantic>=2.0.0",
        "pyarrow>=10.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bloodtest-survival=bloodtest_survival.pipeline.training_pipeline:main",
            "bloodtest-generate=bloodtest_survival.data_generation.generate_blood_test_data:main",
        ],
    },
)
