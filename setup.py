"""Install the SAST Link account service."""

from setuptools import setup, find_packages

setup(
    name='sast-link',
    version='0.1.0',
    packages=find_packages(exclude=['*test*']),
    py_modules=['wsgi'],
    package_data={'sastlink': ['config.py']},
    install_requires=[
        "flask",
        "authlib>=1.5",
        "flask-sqlalchemy",
        "sqlalchemy",
        "redis",
        "fakeredis",
        "pyjwt",
        "pytz",
        "wtforms",
        "retry",
        "click",
        "python-json-logger>=3.1",
        "werkzeug"
    ],
    extras_require={
        'test': ['pytest', 'hypothesis']
    },
    zip_safe=False
)
