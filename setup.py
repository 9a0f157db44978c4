from setuptools import find_packages, setup

setup(
    name='stalink',
    version='1.0.0',
    description='Station-mode Wi-Fi connectivity lifecycle daemon (reconnect, provisioning, MQTT and OTA services)',
    author='',
    author_email='',
    packages=find_packages(include=['stalink', 'stalink.*']),
    python_requires='>=3.11',
    install_requires=[
        'aiomqtt>=2.0',
        'construct>=2.10',
        'httpx>=0.27',
        'marshmallow>=3.20',
        'msgspec>=0.18',
        'tenacity>=8.2',
        'transitions>=0.9',
        'uvloop>=0.19',
    ],
    extras_require={
        'test': [
            'pytest>=8.0',
            'pytest-asyncio>=0.23',
        ],
    },
    entry_points={
        'console_scripts': [
            'stalink=stalink.daemon:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
