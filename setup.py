from setuptools import setup, find_packages

setup(name='straightline',
      version='0.0.1',
      description='Rewrite callback-passing Python into straight-line code running on stackful coroutines',
      long_description='See the `straightline` module docstring for more information on usage.',
      classifiers=[
          "Programming Language :: Python :: 3",
          "License :: OSI Approved :: MIT License",
      ],
      keywords='callbacks coroutines greenlet ast rewriting',
      license='MIT',
      python_requires='>=3.9',
      packages=find_packages(include=['straightline', 'straightline.*']),
      install_requires=[
          'greenlet',
          'outcome',
          'trio',
      ],
      extras_require={
          'test': ['pytest'],
      },
      entry_points={
          'console_scripts': [
              'straightline = straightline.__main__:main',
          ],
      },
)
