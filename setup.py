from setuptools import find_packages, setup
import os
from glob import glob

package_name = 'mppi_local_planner'

setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    data_files=[
        (os.path.join('share', package_name, 'config'), glob('config/**/*.yaml', recursive=True)),
    ],
    install_requires=[
        'setuptools',
        'numpy',
        'torch',
        'PyYAML',
        'transforms3d',
    ],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=True,
    maintainer='ubuntu',
    maintainer_email='your@adress.com',
    description='Sampling-based (MPPI) local trajectory controller for mobile robots',
    license='Apache-2.0',
    tests_require=['pytest'],
)
