from setuptools import setup
import re


def derive_version() -> str:
    version = ''
    with open('guildwire/__init__.py') as f:
        version = re.search(r'^__version__\s*=\s*[\'"]([^\'"]*)[\'"]', f.read(), re.MULTILINE).group(1)

    if not version:
        raise RuntimeError('version is not set')

    if version.endswith(('a', 'b', 'rc')):
        # append version identifier based on commit count
        try:
            import subprocess

            p = subprocess.Popen(['git', 'rev-list', '--count', 'HEAD'], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            out, err = p.communicate()
            if out:
                version += out.decode('utf-8').strip()
            p = subprocess.Popen(['git', 'rev-parse', '--short', 'HEAD'], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            out, err = p.communicate()
            if out:
                version += '+g' + out.decode('utf-8').strip()
        except Exception:
            pass

    return version


extras_require = {
    'speed': [
        'orjson>=3.5.4',
    ],
    'test': [
        'pytest',
        'pytest-asyncio',
        'typing-extensions>=4.3,<5',
    ],
}

setup(
    name='guildwire',
    author='Rapptz',
    license='MIT',
    description='A rate limit aware REST client and guild cache for the Discord API',
    version=derive_version(),
    packages=['guildwire'],
    python_requires='>=3.8.0',
    install_requires=[
        'aiohttp>=3.7.4,<4',
        'yarl',
    ],
    extras_require=extras_require,
)
